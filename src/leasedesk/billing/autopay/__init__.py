"""Autopay enrollment and the monthly billing batch."""
