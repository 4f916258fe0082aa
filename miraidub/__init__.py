"""Mirai Dub API: video upload, AI dubbing jobs, and credit billing."""
