"""Lesson scheduling and booking lifecycle engine."""
