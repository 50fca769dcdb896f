from .quantity import add_quantities, ceil_cost, floor_cost, format_milli, milli_value

__all__ = ["add_quantities", "ceil_cost", "floor_cost", "format_milli", "milli_value"]
