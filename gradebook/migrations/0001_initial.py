from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('academics', '0001_initial'),
        ('students', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='AssessmentType',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(help_text='Assessment name (e.g., Quiz 1, Mid-term Test)', max_length=100)),
                ('grade_level', models.CharField(choices=[('Grade 1', 'Grade 1'), ('Grade 2', 'Grade 2'), ('Grade 3', 'Grade 3'), ('Grade 4', 'Grade 4'), ('Grade 5', 'Grade 5'), ('Grade 6', 'Grade 6'), ('Grade 7', 'Grade 7'), ('Grade 8', 'Grade 8')], db_index=True, max_length=20)),
                ('semester', models.CharField(choices=[('First Semester', 'First Semester'), ('Second Semester', 'Second Semester')], max_length=20)),
                ('academic_year', models.CharField(help_text='Academic year label (e.g., 2018)', max_length=20)),
                ('total_marks', models.DecimalField(decimal_places=2, help_text='Maximum points available for this assessment', max_digits=6, validators=[django.core.validators.MinValueValidator(Decimal('0.01'))])),
                ('month', models.CharField(blank=True, max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('subject', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='assessment_types', to='academics.subject')),
            ],
            options={
                'verbose_name': 'Assessment Type',
                'verbose_name_plural': 'Assessment Types',
                'db_table': 'assessment_type',
                'ordering': ['academic_year', 'semester', 'subject', 'created_at'],
                'indexes': [models.Index(fields=['grade_level', 'semester', 'academic_year'], name='assess_type_level_sem_yr_idx')],
                'unique_together': {('subject', 'name', 'semester', 'academic_year')},
            },
        ),
        migrations.CreateModel(
            name='GradeRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('semester', models.CharField(choices=[('First Semester', 'First Semester'), ('Second Semester', 'Second Semester')], max_length=20)),
                ('academic_year', models.CharField(max_length=20)),
                ('final_score', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=8, validators=[django.core.validators.MinValueValidator(Decimal('0'))])),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='grade_records', to='students.student')),
                ('subject', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='grade_records', to='academics.subject')),
            ],
            options={
                'verbose_name': 'Grade Record',
                'verbose_name_plural': 'Grade Records',
                'db_table': 'grade_record',
                'ordering': ['academic_year', 'semester', 'subject', 'student'],
                'indexes': [models.Index(fields=['academic_year', 'semester'], name='grade_record_year_sem_idx')],
                'constraints': [models.UniqueConstraint(fields=('student', 'subject', 'semester', 'academic_year'), name='unique_grade_record_key')],
            },
        ),
        migrations.CreateModel(
            name='AssessmentScore',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('score', models.DecimalField(decimal_places=2, help_text='Points earned on this assessment', max_digits=6, validators=[django.core.validators.MinValueValidator(Decimal('0'))])),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('assessment_type', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='scores', to='gradebook.assessmenttype')),
                ('grade_record', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='assessments', to='gradebook.graderecord')),
            ],
            options={
                'verbose_name': 'Assessment Score',
                'verbose_name_plural': 'Assessment Scores',
                'db_table': 'assessment_score',
                'ordering': ['created_at', 'id'],
                'indexes': [models.Index(fields=['grade_record', 'assessment_type'], name='assess_score_record_type_idx')],
            },
        ),
    ]
