"""
RefreshArr - reconciles Sonarr/Radarr file records with the filesystem.
"""

__version__ = "1.4.0"
