"""Render layer: job descriptions, ffmpeg serialization, execution.

WHY: Turning a plan into video involves three separable concerns: what
each job composes (jobs.py, graph.py), how that becomes an ffmpeg
command (ffmpeg.py), and how the commands run (executor.py).

RULES:
- jobs.py and graph.py are pure
- ffmpeg.py is the only module that produces filter or argv text
- executor.py is the only module that spawns ffmpeg for rendering
"""
