"""Music catalog backend: catalogue CRUD, session reconciliation and media uploads."""
