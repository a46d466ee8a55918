"""
Rehearsal sessions and the HTTP surface.

Sessions, the subject catalog and the conversation log live here; the voice
turn itself is in voice_turn.
"""
