from memberbase.models.tier import Feature, MembershipTier, TierFeature
from memberbase.models.membership import AdminUser, Membership, MembershipAuditLog, UserProfile
from memberbase.models.usage import UsageTracking
from memberbase.models.billing import BillingWebhookEvent, PaymentHistory
from memberbase.models.contact import ContactSubmission
