"""Moderation module.

Caption, visual and audio checks that gate video publication.
"""
