"""Kindling: keeps the campfire lit.

A command-line client for Campfire chat rooms and a small daemon that
watches rooms and fires notifications when something happens.
"""

from __future__ import annotations
