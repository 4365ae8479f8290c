"""Models package."""

from .project import Project
from .scene import Scene
