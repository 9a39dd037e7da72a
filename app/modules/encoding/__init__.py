"""Encoding module.

Two-phase encoding: Phase 1 produces one fast tier that makes a video
watchable, Phase 2 adds a lower-bitrate tier for adaptive playback.
"""
