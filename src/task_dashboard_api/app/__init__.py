"""Application components: models, storage, lifecycle, worker and UI."""
