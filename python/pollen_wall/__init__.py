"""
Pollen Wall - Event-Driven Pollen Tracker

Follows generation jobs ("pollens") announced on an IPFS node:
- Listens to the `processing_pollen` and `done_pollen` pubsub topics
- Tracks every pollen's lifecycle in an in-memory registry
- Downloads the latest evolution (image) of a pollen into ~/.pollen_wall
- Sets it as the desktop wallpaper and keeps the folder clean
"""

__version__ = "0.3.0"
