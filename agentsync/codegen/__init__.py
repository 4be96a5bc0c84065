"""Code generation — declared names, literal formatting and component rendering."""
