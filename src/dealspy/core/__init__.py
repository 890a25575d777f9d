"""Shared configuration, logging, persistence and collaborator contracts."""
