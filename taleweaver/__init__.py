"""Taleweaver - poll-based orchestration of children's story generation jobs.

Avatar stylization, voice dialog, story drafting, scene splitting, scene
images and image-to-video clips run as detached background jobs; clients
poll task records for progress and read results from session artifacts.
"""

__version__ = "0.1.0"
