"""Domain layer: records, value semantics, predicates, expressions and indexes."""
