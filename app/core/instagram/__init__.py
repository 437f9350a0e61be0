"""Instagram link classification and post resolution."""
