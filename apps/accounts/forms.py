from django import forms
from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from django.utils.translation import gettext_lazy as _
from django.core.exceptions import ValidationError

from .models import ROLE_SUPER_ADMIN, ROLE_CHOICES, UserProfile

User = get_user_model()

# Roles an institution admin may hand out
ASSIGNABLE_ROLES = [(value, label) for value, label in ROLE_CHOICES if value != ROLE_SUPER_ADMIN]


# LOGIN FORM
class LoginForm(forms.Form):
    email = forms.EmailField(label=_('Email Address'), max_length=255)
    password = forms.CharField(label=_('Password'))
    remember = forms.BooleanField(label=_('Remember me'), required=False, initial=False)

    def clean_email(self):
        email = self.cleaned_data.get('email', '')
        return email.lower().strip()


# USER MANAGEMENT FORMS
class UserCreateForm(forms.ModelForm):
    """Create a user inside the current institution"""

    password = forms.CharField(label=_('Password'), min_length=8)
    role = forms.ChoiceField(choices=ASSIGNABLE_ROLES)

    class Meta:
        model = User
        fields = ['email', 'first_name', 'last_name', 'phone', 'role', 'skills', 'job_title']

    def __init__(self, *args, **kwargs):
        self.institution = kwargs.pop('institution', None)
        super().__init__(*args, **kwargs)
        self.fields['skills'].required = False

    def clean_email(self):
        email = self.cleaned_data.get('email', '').lower().strip()
        if User.objects.filter(email=email).exists():
            raise ValidationError(_('A user with this email already exists.'))
        return email

    def clean_skills(self):
        return _clean_skills(self.cleaned_data.get('skills'))

    def clean_password(self):
        password = self.cleaned_data.get('password')
        validate_password(password)
        return password

    def save(self, commit=True):
        user = super().save(commit=False)
        user.institution = self.institution
        user.set_password(self.cleaned_data['password'])
        if commit:
            user.save()
        return user


class UserUpdateForm(forms.ModelForm):
    role = forms.ChoiceField(choices=ASSIGNABLE_ROLES, required=False)

    class Meta:
        model = User
        fields = ['first_name', 'last_name', 'phone', 'role', 'skills', 'job_title', 'is_active']

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # Partial updates: anything missing from the payload keeps its value
        for field in self.fields.values():
            field.required = False

    def clean_role(self):
        return self.cleaned_data.get('role') or self.instance.role

    def clean_skills(self):
        skills = self.cleaned_data.get('skills')
        if skills is None:
            return self.instance.skills
        return _clean_skills(skills)


class ProfileUpdateForm(forms.ModelForm):
    """Fields a user may edit on their own account (user + profile)"""

    first_name = forms.CharField(max_length=50, required=False)
    last_name = forms.CharField(max_length=50, required=False)
    phone = forms.CharField(max_length=17, required=False)

    class Meta:
        model = UserProfile
        fields = ['bio', 'date_of_birth', 'address', 'city', 'country', 'language']

    def save(self, commit=True):
        profile = super().save(commit=commit)
        user = profile.user
        for field in ('first_name', 'last_name', 'phone'):
            value = self.cleaned_data.get(field)
            if value:
                setattr(user, field, value)
        if commit:
            user.save()
        return profile


def _clean_skills(skills):
    if not skills:
        return []
    if isinstance(skills, str):
        skills = skills.split(',')
    if not isinstance(skills, list):
        raise ValidationError(_('Skills must be a list of strings.'))
    return sorted({str(skill).strip().lower() for skill in skills if str(skill).strip()})


# PASSWORD FORMS
class PasswordChangeForm(forms.Form):
    old_password = forms.CharField()
    new_password = forms.CharField(min_length=8)
    confirm_password = forms.CharField()

    def __init__(self, user, *args, **kwargs):
        self.user = user
        super().__init__(*args, **kwargs)

    def clean_old_password(self):
        old_password = self.cleaned_data.get('old_password')
        if not self.user.check_password(old_password):
            raise ValidationError(_('Your old password was entered incorrectly.'))
        return old_password

    def clean(self):
        cleaned_data = super().clean()
        new_password = cleaned_data.get('new_password')
        confirm = cleaned_data.get('confirm_password')

        if new_password and confirm and new_password != confirm:
            raise ValidationError(_('The two password fields must match.'))
        if new_password:
            validate_password(new_password, self.user)

        return cleaned_data


class PasswordResetRequestForm(forms.Form):
    email = forms.EmailField(max_length=255)

    def clean_email(self):
        return self.cleaned_data.get('email', '').lower().strip()


class PasswordResetConfirmForm(forms.Form):
    uid = forms.CharField()
    token = forms.CharField()
    new_password1 = forms.CharField(min_length=8)
    new_password2 = forms.CharField()

    def clean(self):
        cleaned_data = super().clean()
        password1 = cleaned_data.get('new_password1')
        password2 = cleaned_data.get('new_password2')

        if password1 and password2 and password1 != password2:
            raise ValidationError(_('The two password fields must match.'))

        return cleaned_data
