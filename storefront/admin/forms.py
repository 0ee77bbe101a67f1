from flask_wtf import FlaskForm
from wtforms import DateTimeField, IntegerField, SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, InputRequired, Length, NumberRange, Optional

from ..models import DiscountTarget, DiscountType, OrderStatus


class OrderStatusForm(FlaskForm):
    status = SelectField('Status', choices=[(s.value, s.value) for s in OrderStatus],
                         validators=[DataRequired()])
    note = TextAreaField('Note', validators=[Optional(), Length(max=2000)])


class ApproveRefundForm(FlaskForm):
    amount_cents = IntegerField('Amount (cents)', validators=[InputRequired(), NumberRange(min=1)])
    notes = TextAreaField('Notes', validators=[Optional(), Length(max=2000)])


class RejectRefundForm(FlaskForm):
    # Shown to the customer
    notes = TextAreaField('Reason', validators=[DataRequired(), Length(max=2000)])


class BulkDiscountForm(FlaskForm):
    sku = StringField('SKU (blank for every product)', validators=[Optional(), Length(max=100)])
    min_quantity = IntegerField('Minimum quantity', validators=[InputRequired(), NumberRange(min=1)])
    discount_percent = IntegerField('Discount %', validators=[InputRequired(), NumberRange(min=1, max=100)])


class RestockForm(FlaskForm):
    quantity = IntegerField('Quantity', validators=[InputRequired(), NumberRange(min=1)])


DATETIME_FORMATS = ['%Y-%m-%dT%H:%M:%S', '%Y-%m-%dT%H:%M', '%Y-%m-%d %H:%M:%S']


class DiscountCodeForm(FlaskForm):
    code = StringField('Code', validators=[DataRequired(), Length(max=50)])
    description = StringField('Description', validators=[Optional(), Length(max=255)])
    discount_type = SelectField('Type', choices=[(t.value, t.value) for t in DiscountType],
                                validators=[DataRequired()])
    discount_target = SelectField('Applies to', choices=[(t.value, t.value) for t in DiscountTarget],
                                  default=DiscountTarget.SUBTOTAL.value)
    # Percent for percentage codes, cents for fixed ones
    discount_value = IntegerField('Value', validators=[InputRequired(), NumberRange(min=1)])
    min_purchase_cents = IntegerField('Minimum purchase (cents)', validators=[Optional(), NumberRange(min=0)])
    max_discount_cents = IntegerField('Maximum discount (cents)', validators=[Optional(), NumberRange(min=1)])
    max_uses = IntegerField('Total uses', validators=[Optional(), NumberRange(min=1)])
    max_uses_per_customer = IntegerField('Uses per customer', validators=[Optional(), NumberRange(min=1)])
    starts_at = DateTimeField('Starts', format=DATETIME_FORMATS, validators=[Optional()])
    ends_at = DateTimeField('Ends', format=DATETIME_FORMATS, validators=[Optional()])
