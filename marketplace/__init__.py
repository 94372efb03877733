"""The RunGear Kitchen marketplace. Centres around dishes and the people who cook them.

What is in here?

- Dishes, written by users, reviewed by admins before they go public.
- Chefs, who are users whose certificates an admin approved.
- Premium plans bought through PayOS. Chefs can lock dishes behind them.
- A support chat and a sales assistant backed by an LLM.

Repositories talk SQL through `databases`. Services are plain functions that
take repositories as keyword arguments, so tests can hand in their own.
Nothing in here knows about HTTP.
"""
