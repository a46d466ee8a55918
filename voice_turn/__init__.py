"""
Voice-turn core for the call-rehearsal service.

One turn: recorded utterance -> transcription -> contextual customer reply ->
word-safe text segments -> synthesized audio, streamed back in order.

- No session policy lives here (the rehearsal package owns sessions)
- Every stage is bounded by a timeout and fails without retrying
- Turn lifecycle is observable via structured events
"""
