"""
Customer-persona scenarios.

Each scenario file defines:
- persona_prompt: system instruction template for the role-playing customer
- success_text: fixed acknowledgment when the trainee names the part number
- hint_*: deterministic hint replies used when the model returns nothing
- welcome_text / completion_text: fixed announcements (scripted turns)
- name: scenario identifier
"""
