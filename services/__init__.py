"""HTTP services exposed by the icare verifier."""
