"""Run capture components: frames, steps, redaction, clip and bundle writing."""
