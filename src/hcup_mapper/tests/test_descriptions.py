"""
Unit tests for category description lookup.
"""

import logging

import pandas as pd
import pytest

from hcup_mapper import get_category_descriptions


@pytest.fixture
def hcup_mapping():
    """Cleaned DXCCSR layout with one description per category slot"""
    return pd.DataFrame({
        'icd10cm_code': ['E11.9', 'E11.65', 'I10'],
        'ccsr_category_1': ['END002', 'END003', 'CIR007'],
        'ccsr_category_1_description': [
            'Diabetes mellitus without complication',
            'Diabetes mellitus with complication',
            'Essential hypertension',
        ],
        'ccsr_category_2': [None, 'END002', None],
        'ccsr_category_2_description': [None, 'Diabetes mellitus without complication', None],
    })


class TestGetCategoryDescriptions:
    """Test cases for get_category_descriptions"""

    def test_input_order(self, hcup_mapping):
        """Test one row per requested code, in request order"""
        result = get_category_descriptions(['CIR007', 'END002'], hcup_mapping)
        assert list(result.columns) == ['category_code', 'description']
        assert result['category_code'].tolist() == ['CIR007', 'END002']
        assert result['description'].tolist() == [
            'Essential hypertension', 'Diabetes mellitus without complication'
        ]

    def test_later_slot_searched(self):
        """Test codes appearing only in a later category slot"""
        mapping = pd.DataFrame({
            'icd10cm_code': ['E11.65'],
            'ccsr_category_1': ['END003'],
            'ccsr_category_1_description': ['Diabetes mellitus with complication'],
            'ccsr_category_2': ['END005'],
            'ccsr_category_2_description': ['Other endocrine disorders'],
        })
        result = get_category_descriptions('END005', mapping)
        assert result['description'].tolist() == ['Other endocrine disorders']

    def test_single_string(self, hcup_mapping):
        """Test a single code string"""
        result = get_category_descriptions('END003', hcup_mapping)
        assert len(result) == 1
        assert result['description'].iloc[0] == 'Diabetes mellitus with complication'

    def test_unknown_code(self, hcup_mapping, caplog):
        """Test unknown codes give null descriptions and a warning"""
        with caplog.at_level(logging.WARNING):
            result = get_category_descriptions(['XXX999', 'CIR007'], hcup_mapping)
        assert pd.isna(result['description'].iloc[0])
        assert "No description found for 1 code(s): XXX999" in caplog.text

    def test_long_layout(self):
        """Test a plain code/category/description table"""
        mapping = pd.DataFrame({
            'code': ['E11.9', 'E11.9'],
            'category': ['END002', 'END003'],
            'description': [None, 'Diabetes mellitus with complication'],
        })
        result = get_category_descriptions(['END003', 'END002'], mapping)
        assert result['description'].iloc[0] == 'Diabetes mellitus with complication'
        assert pd.isna(result['description'].iloc[1])

    def test_non_null_description_preferred(self):
        """Test a null description does not shadow a later one"""
        mapping = pd.DataFrame({
            'code': ['E11.9', 'E11.65'],
            'category': ['END002', 'END002'],
            'description': [None, 'Diabetes mellitus without complication'],
        })
        result = get_category_descriptions('END002', mapping)
        assert result['description'].iloc[0] == 'Diabetes mellitus without complication'

    def test_quoted_codes(self, hcup_mapping):
        """Test requested codes are normalized"""
        result = get_category_descriptions([" 'CIR007' "], hcup_mapping)
        assert result['category_code'].tolist() == ['CIR007']
        assert result['description'].tolist() == ['Essential hypertension']

    def test_no_codes(self, hcup_mapping):
        """Test an empty request"""
        with pytest.raises(ValueError):
            get_category_descriptions([], hcup_mapping)

    def test_no_description_column(self):
        """Test tables without descriptions"""
        mapping = pd.DataFrame({'code': ['I10'], 'category': ['CIR007']})
        with pytest.raises(ValueError, match="description column"):
            get_category_descriptions('CIR007', mapping)
