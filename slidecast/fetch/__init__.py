"""Retrieval of slide images and the narration audio.

WHY: Remote media has to be on local disk before ffmpeg can read it,
and a request can reference dozens of images. Fetching them concurrently
keeps request latency close to that of the slowest download.
"""
