"""WorkTrackr ticket lifecycle, approval and billing engine."""
