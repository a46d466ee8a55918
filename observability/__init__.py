"""
Structured events shared by the session layer and the voice-turn pipeline.
"""
