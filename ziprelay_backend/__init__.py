"""Backend pieces for the ziprelay streaming archive proxy.

Route handlers in server.py stay thin; this package holds:
- the token-keyed session store and its expiry reaper
- remote member fetching with name resolution
- streamed ZIP writing (stored entries, constant memory)
- the per-download orchestration tying them together

Security note:
Tokens are capability strings (unguessable UUID4). Anyone with the token can
download the archive once, so they are never derived from request data.
"""
