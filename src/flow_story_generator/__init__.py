"""Flow Story Generator.

Drives the Flow image generation web interface through a repeated
upload / prompt / generate / chain workflow, with pause, resume and stop
control, progress reporting, and a bulk download queue.
"""

__version__ = "0.1.0"

from flow_story_generator.automation.config import FlowStorySettings

__all__ = ["__version__", "FlowStorySettings"]
