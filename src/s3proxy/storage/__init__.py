"""Storage backends the proxy reads objects from."""
