"""
External collaborators of the decode cache: byte-range fetchers, byte sources
and the media backend that demuxes and decodes.
"""
