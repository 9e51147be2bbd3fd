"""Field types, table definition rules, payload validation and expressions."""
