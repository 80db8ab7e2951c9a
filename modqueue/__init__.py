"""modqueue -- content-moderation workflow engine for audio clips.

Merges automated classifier flags and community reports into one prioritized
review queue, drives the reviewer workflow, and applies bulk remediation to
clips and profiles atomically.
"""

__version__ = "0.1.0"
