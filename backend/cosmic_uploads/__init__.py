"""Cosmic Uploads: ephemeral file sharing backend."""
