"""Spoken announcements for navigation events."""

import subprocess
from typing import Optional, Callable

import pyttsx3


class Announcer:
    """Text-to-speech for directions, owned by one navigation session"""

    def __init__(self, enabled: bool = True, callback: Optional[Callable[[str], None]] = None):
        self.enabled = enabled
        self.callback = callback
        self.history: list[str] = []
        self._engine = None

    def speak(self, text: str):
        """Speak text using espeak, falling back to pyttsx3"""
        self.history.append(text)
        if self.callback:
            self.callback(text)
        if not self.enabled:
            return

        try:
            subprocess.run(
                ["espeak", "-s", "150", text],
                capture_output=True,
                timeout=10
            )
        except FileNotFoundError:
            self._speak_pyttsx3(text)
        except subprocess.TimeoutExpired:
            print(f"[AUDIO] {text}")

    def _speak_pyttsx3(self, text: str):
        try:
            if self._engine is None:
                self._engine = pyttsx3.init()
            self._engine.say(text)
            self._engine.runAndWait()
        except (RuntimeError, OSError) as e:
            print(f"Audio error: {e}")
            print(f"[AUDIO] {text}")
            self.enabled = False

    def close(self):
        if self._engine is not None:
            self._engine.stop()
            self._engine = None
