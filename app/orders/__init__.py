"""
Orders app.

Owns the aggregates the refund engine reads and reconciles: Order, Payment,
OrderItem and OrderReturn. Order placement and return review live outside
this service; only the state the refund engine depends on is modelled here.
"""
