"""ConsentLens: privacy-policy compliance analysis backend."""
