"""Embed page served for shared file links."""
