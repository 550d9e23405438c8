"""Reading and writing files: config, state, manifests, artifacts."""
