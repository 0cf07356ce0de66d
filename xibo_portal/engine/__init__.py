"""
Layout composition and resolution engine.

Turns raw upstream layout documents into scene nodes and governs the
draft/publish edit session:
- options: widget option bag decoding
- resolver: sub-playlist and dataset resolution with request coalescing
- scene: region geometry scaling and render strategy classification
- session: checkout/draft/publish state machine
- mutations: text edits and media swaps
"""
