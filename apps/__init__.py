"""Long-running applications of the icare verifier."""
