"""Visit entry form."""

from __future__ import annotations

from flask_wtf import FlaskForm
from wtforms import DateField, DecimalField, StringField, TextAreaField
from wtforms.validators import DataRequired, InputRequired, Length, NumberRange, Optional


class VisitForm(FlaskForm):
    """Create/update payload for one visit."""
    visit_date = DateField("Visit date", validators=[DataRequired()], format="%Y-%m-%d")
    patient_name = StringField("Patient", validators=[DataRequired(), Length(max=200)])
    procedure_name = StringField("Procedure", validators=[Optional(), Length(max=200)])
    amount = DecimalField("Amount", validators=[
        DataRequired(),
        NumberRange(min=0.01)
    ], places=2)
    percent = DecimalField("Percent", validators=[
        InputRequired(),
        NumberRange(min=0, max=100)
    ], places=2)
    notes = TextAreaField("Notes", validators=[Length(max=1000)])
