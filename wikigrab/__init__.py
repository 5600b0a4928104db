"""
wikigrab — Mirror a remote wiki into a local store.

Grabs revisions, deleted revisions, files, page restrictions and change
tags from a MediaWiki-style API, resumably, and verifies/self-heals the
mirrored revisions.
"""

__version__ = "0.4.0"
