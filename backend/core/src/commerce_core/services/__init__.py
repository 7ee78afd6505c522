"""Services for the commerce core.

Modules:
- dynamodb: table access and transaction builders
- tables: table definitions used by provisioning and tests
- stock_ledger: atomic per-warehouse stock quantities
- transfer_service: warehouse-to-warehouse stock transfers
- order_state_machine: order transitions with their stock effects
- webhook_reconciler: idempotent payment webhook processing
- refund_service: capped refunds against captured payments
- return_requests: customer return workflow
- gateway: payment provider port and Stripe adapter
- secrets: provider secrets from SSM Parameter Store
- events: transactional domain event outbox and event bus
- fulfillment: fulfillment warehouse lookup
- store_credit: customer store-credit balances
"""

__all__: list[str] = []
