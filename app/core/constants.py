SUPPORTED_CURRENCIES = {"USD", "JMD"}
DEFAULT_CURRENCY = "USD"

# JMD cards need a narrower method set than USD flows
RESTRICTED_PAYMENT_METHOD_CURRENCIES = {"JMD"}
RESTRICTED_PAYMENT_METHOD_TYPES = ["card"]
FULL_PAYMENT_METHOD_TYPES = ["card", "cashapp", "us_bank_account", "link"]

PAYMENT_LINK_TRANSACTION_PREFIX = "plink_"
PAYMENT_INTENT_TRANSACTION_PREFIX = "pi_"

# Transaction types that count towards a merchant's payable balance
INCOMING_TRANSACTION_TYPES = ("received", "payment_link", "qr_payment")

PAYMENT_TYPE_DESTINATION_CHARGES = "destination_charges"
DEFAULT_PAYMENT_SOURCE = "payment_link_modal"
QR_PAYMENT_SOURCE = "qr_generation"
