"""blobtree: a folder view on a flat object store"""
