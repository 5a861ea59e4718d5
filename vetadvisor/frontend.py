import streamlit as st
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
import pandas as pd

from vetadvisor.config import settings

API_URL = settings.api_url
st.set_page_config(page_title="VetAdvisor", layout="wide", page_icon="🐄")

# --- STATE INIT ---
for k in ['user', 'http', 'result']:
    if k not in st.session_state: st.session_state[k] = None

def get_sess():
    s=requests.Session(); r=Retry(total=3, backoff_factor=0.2, status_forcelist=[502,503]); s.mount('http://', HTTPAdapter(max_retries=r)); return s

# one requests.Session per browser tab so the login cookie survives reruns
if st.session_state.http is None: st.session_state.http = get_sess()
http = st.session_state.http

def logout():
    try: http.post(f"{API_URL}/auth/logout")
    except requests.RequestException: pass
    for k in list(st.session_state.keys()): del st.session_state[k]
    st.rerun()

def show_error(res):
    try: st.error(res.json().get('message') or res.json().get('detail'))
    except ValueError: st.error(f"Error {res.status_code}")

def pct(cf): return f"{cf*100:.2f}%"

try: C=http.get(f"{API_URL}/config/read").json(); st.markdown(f"<h2 style='text-align:center;color:#003366'>{C.get('platform_title')}</h2>", unsafe_allow_html=True)
except requests.RequestException: C={}

# LOGIN
if not st.session_state.user:
    t1, t2 = st.tabs(["Login", "Register"])
    with t1:
        c1,c2=st.columns(2)
        with c1:
            r=st.selectbox("Role",["user","admin"]); e=st.text_input("Email"); p=st.text_input("Password",type="password")
            if st.button("Login"):
                try:
                    rs=http.post(f"{API_URL}/auth/login", json={"role":r,"email":e,"password":p})
                    if rs.status_code==200: st.session_state.user=rs.json(); st.rerun()
                    else: st.error("Invalid email or password")
                except requests.RequestException: st.error("Connection Failed")
        with c2:
            st.info(C.get('about',''))
    with t2:
        c1,c2=st.columns(2)
        with c1:
            rn=st.text_input("Name"); re=st.text_input("UsrEmail"); rp=st.text_input("Pass (4+)",type="password")
            if st.button("Register"):
                rs=http.post(f"{API_URL}/auth/register", json={"name":rn,"email":re,"password":rp})
                if rs.status_code==200: st.success("OK, please login")
                else: show_error(rs)

# APP
else:
    user=st.session_state.user
    with st.sidebar:
        st.header(user['role'].title()); st.info(user['name'])
        if st.button("Logout"): logout()

    if user['role']=="user":
        t1,t2,t3=st.tabs(["Consult","History","About"])
        with t1:
            sy=http.get(f"{API_URL}/symptoms").json()
            names={s['code']:f"{s['code']} - {s['name']}" for s in sy}
            q=st.text_input("Search symptom")
            if q:
                hits=http.get(f"{API_URL}/symptoms/search",params={"q":q}).json()
                st.caption(", ".join(f"{h['code']} {h['name']} ({h['score']})" for h in hits) or "No match")
            sel=st.multiselect("Observed symptoms", list(names.keys()), format_func=lambda c: names[c])
            if st.button("Diagnose"):
                rs=http.post(f"{API_URL}/diagnosis",json={"symptom_ids":sel})
                if rs.status_code==200: st.session_state.result=rs.json()
                else: st.session_state.result=None; show_error(rs)
            if st.session_state.result:
                b=st.session_state.result['best']
                st.success(f"Most likely: {b['name']} ({pct(b['cf'])})")
                st.write(b['description']); st.info(f"Remedy: {b['remedy']}")
                df=pd.DataFrame(st.session_state.result['results']); df['confidence']=df['cf'].map(pct)
                st.dataframe(df[['disease_id','name','confidence']], use_container_width=True)

        with t2:
            hs=http.get(f"{API_URL}/history").json()
            if hs:
                df=pd.DataFrame(hs); df['confidence']=df['cf'].map(pct)
                st.dataframe(df[['id','created_at','disease_name','confidence']], use_container_width=True)
                hid=st.selectbox("Detail",[h['id'] for h in hs])
                h=http.get(f"{API_URL}/history/{hid}").json()
                with st.expander(f"{h['disease_name']} - {h['created_at'][:16]}", expanded=True):
                    st.write(h['description']); st.info(f"Remedy: {h['remedy']}")
                    b=http.get(f"{API_URL}/history/{hid}/pdf").content; st.download_button("Save PDF",b,f"diagnosis-{hid}.pdf","application/pdf")
            else: st.caption("No consultations yet.")

        with t3:
            st.write(C.get('about','')); st.caption(f"{C.get('address','')} | Tel: {C.get('phone','')}")

    elif user['role']=="admin":
        a1,a2,a3,a4,a5=st.tabs(["Dashboard","Symptoms","Diseases","Rules","Users"])
        with a1:
            s=http.get(f"{API_URL}/admin/dashboard").json(); c=st.columns(5)
            for col,(lbl,k) in zip(c,[("Users","total_users"),("Diseases","total_diseases"),("Symptoms","total_symptoms"),("Rules","total_rules"),("Diagnoses","total_diagnoses")]):
                col.metric(lbl, s.get(k,0))

        with a2:
            sy=http.get(f"{API_URL}/admin/symptoms").json(); st.dataframe(pd.DataFrame(sy), use_container_width=True)
            n=st.text_input("New symptom")
            if st.button("Add Sy"): http.post(f"{API_URL}/admin/symptoms",json={"name":n}); st.rerun()
            if sy:
                tg=st.selectbox("Symptom",[x['code'] for x in sy]); nn=st.text_input("Rename to", key="sy_rn")
                c1,c2=st.columns(2)
                if c1.button("Save Sy"): http.put(f"{API_URL}/admin/symptoms/{tg}",json={"name":nn}); st.rerun()
                if c2.button("Del Sy"): http.delete(f"{API_URL}/admin/symptoms/{tg}"); st.rerun()

        with a3:
            ds=http.get(f"{API_URL}/admin/diseases").json(); st.dataframe(pd.DataFrame(ds), use_container_width=True)
            tg=st.selectbox("Disease",["New"]+[x['code'] for x in ds])
            cur=next((x for x in ds if x['code']==tg), {"name":"","description":"","remedy":""})
            with st.form("dz"):
                n=st.text_input("Name",cur['name']); d=st.text_area("Description",cur['description']); rm=st.text_area("Remedy",cur['remedy'])
                if st.form_submit_button("Save"):
                    body={"name":n,"description":d,"remedy":rm}
                    rs=http.post(f"{API_URL}/admin/diseases",json=body) if tg=="New" else http.put(f"{API_URL}/admin/diseases/{tg}",json=body)
                    if rs.status_code==200: st.rerun()
                    else: show_error(rs)
            if tg!="New" and st.button("Delete Disease"):
                rs=http.delete(f"{API_URL}/admin/diseases/{tg}")
                if rs.status_code!=200: show_error(rs)
                else: st.rerun()

        with a4:
            rl=http.get(f"{API_URL}/admin/rules").json()
            if rl: st.dataframe(pd.DataFrame(rl), use_container_width=True)
            ds=http.get(f"{API_URL}/admin/diseases").json(); sy=http.get(f"{API_URL}/admin/symptoms").json()
            dm={f"{x['code']} {x['name']}":x['code'] for x in ds}; sm={f"{x['code']} {x['name']}":x['code'] for x in sy}
            tg=st.selectbox("Rule",["New"]+[x['id'] for x in rl])
            cur=next((x for x in rl if x['id']==tg), None)
            with st.form("rl"):
                dk=list(dm.keys()); sk=list(sm.keys())
                di=st.selectbox("Disease",dk,index=[dm[k] for k in dk].index(cur['disease_code']) if cur else 0)
                si=st.selectbox("Symptom",sk,index=[sm[k] for k in sk].index(cur['symptom_code']) if cur else 0)
                cf=st.number_input("CF",-1.0,1.0,float(cur['cf']) if cur else 0.5,0.05)
                if st.form_submit_button("Save") and di and si:
                    body={"disease_code":dm[di],"symptom_code":sm[si],"cf":cf}
                    rs=http.post(f"{API_URL}/admin/rules",json=body) if tg=="New" else http.put(f"{API_URL}/admin/rules/{tg}",json=body)
                    if rs.status_code==200: st.rerun()
                    else: show_error(rs)
            if cur and st.button("Delete Rule"): http.delete(f"{API_URL}/admin/rules/{tg}"); st.rerun()

        with a5:
            us=http.get(f"{API_URL}/admin/users").json(); st.dataframe(pd.DataFrame(us), use_container_width=True)
            tg=st.selectbox("Account",["New"]+[x['id'] for x in us])
            cur=next((x for x in us if x['id']==tg), {"name":"","email":"","role":"user"})
            with st.form("us"):
                n=st.text_input("N",cur['name']); e=st.text_input("E",cur['email'])
                r=st.selectbox("Role",["user","admin"],index=0 if cur['role']=="user" else 1); w=st.text_input("Set PW",type="password")
                if st.form_submit_button("Save"):
                    body={"name":n,"email":e,"role":r,"password":w}
                    rs=http.post(f"{API_URL}/admin/users",json=body) if tg=="New" else http.put(f"{API_URL}/admin/users/{tg}",json=body)
                    if rs.status_code==200: st.success("OK"); st.rerun()
                    else: show_error(rs)
            if tg!="New" and st.button("Delete Account"):
                rs=http.delete(f"{API_URL}/admin/users/{tg}")
                if rs.status_code!=200: show_error(rs)
                else: st.rerun()
