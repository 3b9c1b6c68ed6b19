"""File storage module for Cosmic Uploads.

Uploads are kept for a fixed 24 hours and the store as a whole is capped
at 5GB.  Metadata lives in memory only; blobs live flat in the upload
directory under names derived from their random file IDs.

Files disappear in one of three ways:
- the hourly expiry reaper finds them past their TTL
- the capacity reaper evicts them, oldest first, to get back under the cap
- a read finds them expired and deletes them on the spot
"""
