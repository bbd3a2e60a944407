"""wastewise - sustainability task workflow for the municipal waste-management portal."""
