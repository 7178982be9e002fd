"""Queue consumers for the video analysis pipeline.

This package contains the video analysis worker, the daily digest worker and
the periodic stuck-job reaper / queue depth monitor that run beside them in the
worker process.
"""
