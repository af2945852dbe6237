"""Arkiv: tenant media storage and secure delivery."""
